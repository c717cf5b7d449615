import csv
import random
from typing import List

from .config import TrackingConfig
from .models import Position, Vehicle
from .places import Place


def load_vehicles(path: str) -> List[Vehicle]:
    out: List[Vehicle] = []
    with open(path, "r", encoding="utf-8") as f:
        r = csv.DictReader(f)
        for row in r:
            out.append(
                Vehicle(
                    vehicle_id=row["id"],
                    license_plate=row["license_plate"],
                    driver=row["driver"],
                    position=Position(lng=float(row["lng"]), lat=float(row["lat"])),
                    battery_level=min(100.0, max(0.0, float(row.get("battery_level") or 100))),
                )
            )
    return out


_DEMO_FLEET = [
    ("v001", "YUE-A12345", "Driver Zhang", 85.0, 22.0),
    ("v002", "YUE-B67890", "Driver Li", 92.0, 20.0),
    ("v003", "YUE-C34567", "Driver Wang", 78.0, 21.0),
]


def demo_fleet(cfg: TrackingConfig, rng: random.Random) -> List[Vehicle]:
    spread = cfg.fleet_spread_deg
    return [
        Vehicle(
            vehicle_id=vid,
            license_plate=plate,
            driver=driver,
            position=Position(
                lng=cfg.center_lng + (rng.random() - 0.5) * spread,
                lat=cfg.center_lat + (rng.random() - 0.5) * spread,
            ),
            battery_level=battery,
            temperature=temp,
        )
        for vid, plate, driver, battery, temp in _DEMO_FLEET
    ]


# (id, name, address, tel, category, d_lng, d_lat) offsets from the map center
_DEMO_PLACES = [
    ("s001", "CR Vanguard Supermarket", "1 Jianguomenwai Ave", "010-12345678", "supermarket", 0.01, 0.0),
    ("s002", "McDonald's", "8 Jianguomen North St", "010-87654321", "restaurant", 0.02, 0.01),
    ("s003", "Guoda Pharmacy", "88 Jianguo Rd", "010-11223344", "pharmacy", -0.01, 0.02),
    ("s004", "Bank of China", "2 Jianguomenwai Ave", "010-55667788", "bank", 0.0, 0.03),
    ("s005", "Starbucks Coffee", "1A Jianguo Rd", "010-99887766", "cafe", 0.03, 0.04),
]


def demo_places(cfg: TrackingConfig) -> List[Place]:
    """Store catalogue for place search when no AMap key is configured."""
    return [
        Place(
            place_id=pid,
            name=name,
            address=address,
            location=Position(lng=cfg.center_lng + d_lng, lat=cfg.center_lat + d_lat),
            tel=tel,
            category=category,
        )
        for pid, name, address, tel, category, d_lng, d_lat in _DEMO_PLACES
    ]
