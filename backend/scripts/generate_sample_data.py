"""Generate synthetic import and trusted CSVs for an end-to-end demo.

Objects and scenarios:
  185.220.101.0/24 hosts: reported repeatedly by several feeds → high scores
  10.20.0.0/30 hosts: reported, then trusted by the CIDR entry (10.20.0.3 is
                     the broadcast address and stays untrusted)
  8.8.8.8:           reported once, trusted by exact match
  999.1.1.1:         malformed ipv4 → rejected at merge
  domains, urls, hashes, ipv6: merged but never scored

Usage:
    python scripts/generate_sample_data.py
    # Outputs: importCSV/sample_import.csv, trustedCSV/sample_trusted.csv
    objectanalyzer run-all
"""
from __future__ import annotations

import csv
import random
from datetime import datetime, timedelta
from pathlib import Path

random.seed(42)

IMPORT_PATH = Path("importCSV") / "sample_import.csv"
TRUSTED_PATH = Path("trustedCSV") / "sample_trusted.csv"

IMPORT_FIELDNAMES = [
    "object", "object_type", "notes", "source", "time_provided",
    "geo_region", "geo_country", "geo_org",
]
TRUSTED_FIELDNAMES = ["object", "object_type", "notes", "source"]

SOURCES = ["honeypot-eu", "honeypot-us", "firewall-edge", "ids-core"]

BASE_DATE = datetime.now().replace(microsecond=0) - timedelta(days=1)


def report(obj, object_type, notes="", source=None, geo=("", "", "")):
    return {
        "object": obj,
        "object_type": object_type,
        "notes": notes,
        "source": source or random.choice(SOURCES),
        "time_provided": (BASE_DATE + timedelta(minutes=random.randint(0, 1440))).isoformat(),
        "geo_region": geo[0],
        "geo_country": geo[1],
        "geo_org": geo[2],
    }


rows = []

# Busy scanners: each reported between 3 and 12 times
for host in (10, 11, 12, 57, 201):
    for _ in range(random.randint(3, 12)):
        rows.append(report(f"185.220.101.{host}", "ipv4", "ssh brute force", geo=("Europe", "DE", "Tor exit")))

# Internal range covered by the trusted CIDR entry
for host in (1, 2, 3):
    rows.append(report(f"10.20.0.{host}", "ipv4", "internal scanner"))

rows.append(report("8.8.8.8", "ipv4", "dns lookups", geo=("North America", "US", "Google")))
rows.append(report("999.1.1.1", "ipv4", "typo in feed"))
rows.append(report("2001:db8::dead:beef", "ipv6", "port scan"))
rows.append(report("::ffff:192.0.2.1", "ipv6", "mapped address, rejected"))
rows.append(report("malware-c2.example", "domain", "c2 beacon"))
rows.append(report("http://malware-c2.example/payload.bin", "url", "dropper"))
rows.append(report("44d88612fea8a8f36de82e1278abb02f", "hash", "eicar md5"))
rows.append(report("printer.local", "hostname", "unknown kind, rejected"))

random.shuffle(rows)

trusted_rows = [
    {"object": "8.8.8.8", "object_type": "ipv4", "notes": "public resolver", "source": "netops"},
    {"object": "10.20.0.0/30", "object_type": "ipv4CIDR", "notes": "scanner subnet", "source": "netops"},
    {"object": "2001:db8::1", "object_type": "ipv6", "notes": "vpn gateway", "source": "netops"},
]

for path, fieldnames, data in (
    (IMPORT_PATH, IMPORT_FIELDNAMES, rows),
    (TRUSTED_PATH, TRUSTED_FIELDNAMES, trusted_rows),
):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
    print(f"Sample data written to {path} ({len(data)} rows)")
