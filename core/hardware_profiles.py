from typing import Any, Dict, List

HYPERVISOR = "vSphere"

# (id, cores, core speed estimate, ram MB, disk GB)
_CATALOG = [
    ("C1_M1_D10", 1, 1.0, 1024, 20),
    ("C2_M2_D30", 2, 1.0, 2048, 30),
    ("C2_M2_D50", 2, 1.0, 2048, 50),
    ("C2_M4_D50", 2, 2.0, 4096, 50),
    ("C2_M10_D80", 2, 2.0, 10240, 80),
    ("C3_M10_D80", 3, 2.0, 10240, 80),
    ("C4_M4_D10", 4, 2.0, 4096, 10),
    ("C2_M6_D40", 2, 2.0, 6 * 1024, 40),
    ("C8_M16_D30", 8, 2.0, 16 * 1024, 30),
    ("C8_M16_D80", 8, 2.0, 16 * 1024, 80),
]


def list_hardware_profiles() -> List[Dict[str, Any]]:
    return [
        {
            "id": profile_id,
            "name": profile_id,
            "hypervisor": HYPERVISOR,
            "cores": cores,
            "speed": speed,
            "ram_mb": ram_mb,
            "volumes": [{"size_gb": disk_gb, "type": "LOCAL"}],
        }
        for profile_id, cores, speed, ram_mb, disk_gb in _CATALOG
    ]


def get_hardware_profile(profile_id: str) -> Dict[str, Any] | None:
    for profile in list_hardware_profiles():
        if profile["id"] == profile_id:
            return profile
    return None
