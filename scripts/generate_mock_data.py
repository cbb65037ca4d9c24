import json
import os

import numpy as np
import pandas as pd

from routing.models import ZoneCategory

# Major freight cities used as pickup/drop anchors (lat, lng)
CITIES = {
    "Mumbai": (19.0760, 72.8777),
    "Pune": (18.5204, 73.8567),
    "Nashik": (19.9975, 73.7898),
    "Surat": (21.1702, 72.8311),
    "Ahmedabad": (23.0225, 72.5714),
    "Indore": (22.7196, 75.8577),
    "Nagpur": (21.1458, 79.0882),
    "Bhopal": (23.2599, 77.4126),
    "Jaipur": (26.9124, 75.7873),
    "Delhi": (28.7041, 77.1025),
}


def generate_mock_loads(num_loads=40, output_file="loads_generated.csv", seed=None):
    """
    Generates a load board dataset. Pickups are scattered within ~15 km of a
    random anchor city so several loads compete near the same destination.
    """
    rng = np.random.default_rng(seed)
    names = list(CITIES)

    data = []
    for load_index in range(num_loads):
        pickup_city, drop_city = rng.choice(names, size=2, replace=False)
        pickup_lat, pickup_lng = CITIES[pickup_city]
        drop_lat, drop_lng = CITIES[drop_city]

        data.append({
            "load_id": f"L{str(load_index + 1).zfill(4)}",
            "pickup_city": pickup_city,
            # ~0.15 degrees is roughly 15 km
            "pickup_lat": np.round(pickup_lat + rng.uniform(-0.15, 0.15), 6),
            "pickup_lng": np.round(pickup_lng + rng.uniform(-0.15, 0.15), 6),
            "drop_city": drop_city,
            "drop_lat": np.round(drop_lat + rng.uniform(-0.05, 0.05), 6),
            "drop_lng": np.round(drop_lng + rng.uniform(-0.05, 0.05), 6),
            "commodity": rng.choice(["FMCG", "Steel", "Cement", "Textiles", "Electronics"]),
            "rate": float(np.round(rng.uniform(18000, 95000), -2)),
            "vehicle_type": rng.choice(["32ft MXL", "20ft SXL", "Trailer"], p=[0.5, 0.3, 0.2]),
        })

    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {num_loads} loads and saved to '{output_file}'")

    print("\nLoads per pickup city:")
    for city, count in df["pickup_city"].value_counts().head(5).items():
        print(f"  {city}: {count}")
    return df


def generate_mock_zones(center=(21.1458, 79.0882), num_zones=12, spread_deg=3.0,
                        output_file="zones_generated.json", seed=None):
    """
    Random hexagonal risk zones around `center`. Radii between 1 and 6 km.
    """
    rng = np.random.default_rng(seed)
    categories = [category.value for category in ZoneCategory]

    zones = []
    for zone_index in range(num_zones):
        lat = center[0] + rng.uniform(-spread_deg, spread_deg)
        lng = center[1] + rng.uniform(-spread_deg, spread_deg)
        radius_deg = rng.uniform(1.0, 6.0) / 111.0
        angles = np.linspace(0, 2 * np.pi, 6, endpoint=False)

        zones.append({
            "id": f"Z{str(zone_index + 1).zfill(3)}",
            "name": f"Zone {zone_index + 1}",
            "category": str(rng.choice(categories)),
            "coordinates": [
                {
                    "lat": float(np.round(lat + radius_deg * np.sin(angle), 6)),
                    # stretch longitude so the hexagon is round on the ground
                    "lng": float(np.round(lng + radius_deg * np.cos(angle) / np.cos(np.radians(lat)), 6)),
                }
                for angle in angles
            ],
        })

    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(zones, f, indent=2)
    print(f"Generated {num_zones} zones and saved to '{output_file}'")
    return zones


if __name__ == "__main__":
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    os.makedirs(os.path.join(base_dir, "sampledata"), exist_ok=True)
    generate_mock_loads(num_loads=40, output_file=os.path.join(base_dir, "sampledata", "loads.csv"))
    generate_mock_zones(output_file=os.path.join(base_dir, "sampledata", "zones.json"))
