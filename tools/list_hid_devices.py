import hid
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import vial_protocol as vp
from device_driver import detect_device_type


def list_all(show_all: bool = False):
    print("Enumerating HID devices...")
    for d in hid.enumerate():
        is_raw = d.get('usage_page') == vp.RAW_USAGE_PAGE and d.get('usage') == vp.RAW_USAGE
        if not (is_raw or show_all):
            continue
        tag = "RAW HID" if is_raw else "other"
        print(f"[{tag}] {d['product_string']} ({d['vendor_id']:04X}:{d['product_id']:04X})")
        print(f"  Path: {d['path']}")
        print(f"  Interface: {d['interface_number']}  Usage: {d.get('usage_page', 0):04X}/{d.get('usage', 0):02X}")
        print("-" * 20)

    print("Keyboards usable for remapping:")
    for info in vp.list_devices():
        print(f"  {info.product} [{detect_device_type(info)}] at {info.path}")


if __name__ == "__main__":
    list_all(show_all="--all" in sys.argv)
