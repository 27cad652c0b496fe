import random
import sys
import time

from scapy.all import IP, TCP, UDP, Ether, wrpcap


def main():
    """
    Write a pcap with a quiet baseline followed by a one second DDoS burst.

      python scripts/generate_sample_pcap.py sample.pcap
      capture-agent replay sample.pcap
    """
    out = sys.argv[1] if len(sys.argv) > 1 else "sample.pcap"
    start = float(int(time.time()))
    packets = []

    for sec in range(20):
        for i in range(5):
            pkt = Ether() / IP(src="10.0.0.1", dst="10.0.0.2") / TCP(sport=51514, dport=443)
            pkt.time = start + sec + i * 0.1
            packets.append(pkt)

    burst = start + 20
    for i in range(400):
        src = f"172.16.{random.randint(0, 3)}.{random.randint(1, 254)}"
        pkt = Ether() / IP(src=src, dst="10.0.0.2") / UDP(sport=random.randint(1024, 65535), dport=80)
        pkt.time = burst + i / 400.0
        packets.append(pkt)

    for i in range(5):
        pkt = Ether() / IP(src="10.0.0.1", dst="10.0.0.2") / TCP(sport=51514, dport=443)
        pkt.time = start + 21 + i * 0.1
        packets.append(pkt)

    wrpcap(out, packets)
    print(f"wrote {len(packets)} packets to {out}")


if __name__ == "__main__":
    main()
