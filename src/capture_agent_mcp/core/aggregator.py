from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .capability_base import Detector
from .errors import OutOfOrderTimestampError, PersistenceError
from .history import RecentHistoryWindow
from .models import AnomalyEvent, FeatureSnapshot, PacketRecord, PerSecondBucket
from .persistence import PathLike, write_session
from .store import AnomalyLog

logger = logging.getLogger(__name__)


def protocol_entropy(protocol_counts: Dict[str, int], total: int) -> float:
    """
    Shannon entropy in bits of the protocol histogram.
    """
    if total <= 0:
        return 0.0
    h = 0.0
    for count in protocol_counts.values():
        p = count / total
        if p > 0.0:
            h -= p * math.log2(p)
    return h


class StatsAggregator:
    """
    Per second aggregation for one capture or replay session.

    Main concepts:
      session_start
        Unix time the session is measured from. Second 0 starts here.

      open bucket
        Only one bucket accepts packets at a time. A packet from a later
        second finalizes it and opens the next one.

      finalization
        Happens exactly once per bucket. The bucket is turned into a
        FeatureSnapshot, scored by the detector, then folded into the
        recent history window.

    Threading:
      No internal locking. Call every method from the thread that records
      packets, or hand finalized data off explicitly.
    """

    def __init__(
        self,
        session_start: float,
        detector: Optional[Detector] = None,
        history_window: int = 30,
        on_anomaly: Optional[Callable[[AnomalyEvent], None]] = None,
    ):
        self.session_start = float(session_start)
        self.session_end = self.session_start
        # unbounded, anomaly_export reads the whole session
        self.anomaly_log = AnomalyLog(maxlen=None)
        self.dropped = 0
        self.last_error: Optional[str] = None

        self._detector = detector
        self._on_anomaly = on_anomaly
        self._history = RecentHistoryWindow(history_window)
        self._buckets: Dict[int, PerSecondBucket] = {}
        self._open: Optional[PerSecondBucket] = None
        self._last_finalized = -1
        self._last_file_path: Optional[Path] = None

    @property
    def last_file_path(self) -> Optional[Path]:
        return self._last_file_path

    @property
    def open_second(self) -> Optional[int]:
        return self._open.second if self._open is not None else None

    def record(self, packet: PacketRecord) -> bool:
        return self.record_packet(
            packet.ts, packet.protocol, packet.src, packet.dst, packet.size, packet.row
        )

    def record_packet(
        self,
        timestamp: float,
        protocol: str,
        src: str,
        dst: str,
        size: int,
        row: int = -1,
    ) -> bool:
        """
        Add one packet to its second. Returns False when the packet was dropped.

        Packets before the session start are dropped. Packets for a second that
        was already flushed are dropped too, since a finalized bucket is read
        only. A packet older than the open bucket raises OutOfOrderTimestampError.
        """
        second = math.floor(float(timestamp) - self.session_start)
        if second < 0:
            self.dropped += 1
            return False

        if self._open is None:
            if second <= self._last_finalized:
                self.dropped += 1
                logger.debug("Dropping packet for already finalized second %d", second)
                return False
            self._open = PerSecondBucket(second=second)
        elif second > self._open.second:
            self._finalize(self._open)
            self._open = PerSecondBucket(second=second)
        elif second < self._open.second:
            raise OutOfOrderTimestampError(second, self._open.second)

        if timestamp > self.session_end:
            self.session_end = float(timestamp)

        self._open.add(protocol, src, dst, size, row)
        return True

    def finalize_pending_data(self) -> None:
        """
        Finalize the open bucket, if any. Safe to call repeatedly.
        """
        if self._open is not None:
            bucket, self._open = self._open, None
            self._finalize(bucket)

    def buckets(self) -> List[PerSecondBucket]:
        """
        Finalized buckets, ascending by second.
        """
        return [self._buckets[s] for s in sorted(self._buckets)]

    def anomalies(self) -> List[AnomalyEvent]:
        return self.anomaly_log.all()

    def persist(self, dir_path: PathLike, finalize_pending: bool = False) -> bool:
        """
        Write finalized buckets to one JSON document for this session.

        Returns False on failure. In memory state is left intact so the
        call can be retried, and the last good file is kept.
        """
        if finalize_pending:
            self.finalize_pending_data()

        if not self._buckets:
            return True

        try:
            path = write_session(
                dir_path,
                self.session_start,
                self.session_end,
                self._buckets.values(),
                previous_path=self._last_file_path,
            )
        except PersistenceError as exc:
            self.last_error = str(exc)
            logger.warning("Failed to persist session statistics to %s: %s", dir_path, exc)
            return False

        self._last_file_path = path
        self.last_error = None
        return True

    def snapshot(self, bucket: PerSecondBucket) -> FeatureSnapshot:
        """
        Build the detector view of bucket against the current history window.
        """
        new_connections = sum(1 for c in bucket.connections if not self._history.has_connection(c))
        new_protocols = [p for p in bucket.protocol_counts if not self._history.has_protocol(p)]

        return FeatureSnapshot(
            second=bucket.second,
            packets=float(bucket.packets),
            bytes=float(bucket.bytes),
            avg_packet_size=bucket.avg_packet_size,
            unique_connections=len(bucket.connections),
            new_connections=new_connections,
            protocol_entropy=protocol_entropy(bucket.protocol_counts, bucket.packets),
            protocol_count=len(bucket.protocol_counts),
            new_protocols=new_protocols,
            protocol_counts=dict(bucket.protocol_counts),
            source_packets=dict(bucket.source_packets),
            destination_packets=dict(bucket.destination_packets),
            source_fan_out={k: len(v) for k, v in bucket.source_fan_out.items()},
            destination_fan_in={k: len(v) for k, v in bucket.destination_fan_in.items()},
            rows_by_source={k: list(v) for k, v in bucket.rows_by_source.items()},
            rows_by_destination={k: list(v) for k, v in bucket.rows_by_destination.items()},
            packet_rows=list(bucket.rows),
        )

    def _finalize(self, bucket: PerSecondBucket) -> None:
        bucket.finalized = True
        self._buckets[bucket.second] = bucket
        self._last_finalized = bucket.second

        # Score before the bucket joins the history, otherwise nothing is new.
        snap = self.snapshot(bucket)

        if self._detector is not None:
            try:
                event = self._detector.observe(snap)
            except Exception:
                logger.exception("Anomaly detector failed on second %d", bucket.second)
                event = None

            if event is not None:
                self.anomaly_log.append(event)
                if self._on_anomaly is not None:
                    try:
                        self._on_anomaly(event)
                    except Exception:
                        logger.exception("Anomaly consumer failed on second %d", bucket.second)

        self._history.push(bucket.second, bucket.connections, bucket.protocol_counts)
