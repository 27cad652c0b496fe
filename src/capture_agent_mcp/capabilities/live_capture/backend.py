"""
scapy backed capture handle.

Opening uses conf.L2listen so the platform socket (PF_PACKET, BPF, Npcap)
is chosen by scapy. Filters are compiled with libpcap through the ctypes
bindings scapy ships, which lets us pass the resolved netmask and the
optimize flag explicitly.

Break-loop primitive:
  dispatch() selects on the capture socket AND an ObjectPipe, the same
  control pipe scapy's own sniff() uses to stop. breakloop() writes one
  token into the pipe, which wakes select() at once even when no packets
  arrive.
"""
from __future__ import annotations

import ctypes
import logging
import socket
import struct
import sys
from typing import Any, Callable, List, Tuple

from scapy.all import conf, get_if_list
from scapy.automaton import ObjectPipe
from scapy.data import DLT_EN10MB, MTU
from scapy.error import Scapy_Exception

from capture_agent_mcp.core.capability_base import DISPATCH_BREAK, CompiledFilter
from capture_agent_mcp.core.errors import DeviceOpenError, DispatchError, FilterCompileError

logger = logging.getLogger(__name__)

# linux/filter.h
SO_ATTACH_FILTER = 26


def list_interfaces() -> List[str]:
    return list(get_if_list())


class ScapyCaptureHandle:
    """
    One open capture socket plus its wakeup pipe.

    Everything except breakloop() must be called from the capture thread.
    """

    def __init__(self, interface: str, promiscuous: bool = True):
        self.interface = interface
        self.promiscuous = promiscuous
        try:
            self._sock = conf.L2listen(iface=interface, promisc=promiscuous)
        except (OSError, Scapy_Exception, ValueError) as exc:
            raise DeviceOpenError(f"cannot open {interface}: {exc}") from exc

        self._wakeup = ObjectPipe()
        self._closed = False
        self.link_type = conf.l2types.layer2num.get(getattr(self._sock, "LL", None), DLT_EN10MB)

    def lookup_netmask(self) -> Tuple[int, int]:
        """
        Network and mask of the first IPv4 route bound to this interface.
        """
        for net, mask, _gw, iface, _addr, _metric in conf.route.routes:
            if str(iface) != self.interface:
                continue
            if net and mask:
                return int(net), int(mask)
        raise LookupError(f"no IPv4 network configured on {self.interface}")

    def compile(self, expression: str, optimize: bool, netmask: int) -> CompiledFilter:
        try:
            from scapy.libs.structures import bpf_program
            from scapy.libs.winpcapy import pcap_compile_nopcap
        except (ImportError, OSError) as exc:
            raise FilterCompileError(f"libpcap is not available: {exc}") from exc

        program = bpf_program()
        ret = pcap_compile_nopcap(
            MTU,
            self.link_type,
            ctypes.byref(program),
            expression.encode("utf8"),
            1 if optimize else 0,
            netmask & 0xFFFFFFFF,
        )
        if ret == -1:
            raise FilterCompileError(f"invalid filter expression {expression!r}")
        return CompiledFilter(expression=expression, program=program)

    def install(self, compiled: CompiledFilter) -> None:
        if compiled.program is None:
            raise FilterCompileError("filter program was already released")

        if sys.platform.startswith("linux"):
            # The kernel copies the program and swaps it in one step.
            bp = compiled.program
            fprog = struct.pack("HL", bp.bf_len, ctypes.addressof(bp.bf_insns.contents))
            try:
                self._sock.ins.setsockopt(socket.SOL_SOCKET, SO_ATTACH_FILTER, fprog)
            except OSError as exc:
                raise FilterCompileError(f"cannot attach filter: {exc}") from exc
            return

        # Elsewhere open a filtered socket first, then drop the old one.
        try:
            fresh = conf.L2listen(iface=self.interface, promisc=self.promiscuous, filter=compiled.expression)
        except (OSError, Scapy_Exception) as exc:
            raise FilterCompileError(f"cannot reopen {self.interface} with filter: {exc}") from exc
        old, self._sock = self._sock, fresh
        old.close()

    def release(self, compiled: CompiledFilter) -> None:
        if compiled.program is None:
            return
        # compile() already loaded libpcap, so this import cannot fail here
        from scapy.libs.winpcapy import pcap_freecode

        pcap_freecode(ctypes.byref(compiled.program))
        compiled.program = None

    def dispatch(self, callback: Callable[[Any], None]) -> int:
        try:
            ready = self._sock.select([self._sock, self._wakeup], None)
        except (OSError, ValueError) as exc:
            raise DispatchError(f"select failed on {self.interface}: {exc}") from exc

        # A break wins over pending packets. They stay queued in the kernel
        # and are read by the next dispatch.
        if self._wakeup in ready:
            self._wakeup.recv()
            return DISPATCH_BREAK

        count = 0
        if self._sock in ready:
            try:
                pkt = self._sock.recv()
            except (OSError, Scapy_Exception) as exc:
                raise DispatchError(f"recv failed on {self.interface}: {exc}") from exc
            if pkt is not None:
                callback(pkt)
                count += 1
        return count

    def breakloop(self) -> None:
        if not self._closed:
            self._wakeup.send(None)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        self._wakeup.close()


def open_handle(interface: str, promiscuous: bool) -> ScapyCaptureHandle:
    return ScapyCaptureHandle(interface, promiscuous)
