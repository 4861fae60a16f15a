#!/usr/bin/env python3
"""
Device detection utility.
Lists working cameras and microphones so the right --camera index can be
picked and the speech channel can open an input device.
"""

import os

import cv2
import speech_recognition as sr


def check_camera(device_id):
    """Open a camera index and read one frame.

    Returns:
        (width, height) on success, None otherwise
    """
    cap = cv2.VideoCapture(device_id)
    if not cap.isOpened():
        return None
    ret, frame = cap.read()
    cap.release()
    if not ret or frame is None:
        return None
    height, width = frame.shape[:2]
    return width, height


def list_microphones():
    """Input device names known to PyAudio (empty if PyAudio is missing)."""
    try:
        return sr.Microphone.list_microphone_names()
    except (AttributeError, OSError) as e:
        print("  Could not query audio devices: {}".format(e))
        return []


def main():
    print("=" * 60)
    print("GRAB & TALK DEVICE DETECTION")
    print("=" * 60)

    print("\nCameras:")
    working = []
    for device_id in range(10):
        if os.name == "posix" and not os.path.exists("/dev/video{}".format(device_id)):
            continue
        size = check_camera(device_id)
        if size:
            print("  [{}] {}x{}".format(device_id, *size))
            working.append(device_id)
    if not working:
        print("  No working camera found")

    print("\nMicrophones:")
    names = list_microphones()
    for index, name in enumerate(names):
        print("  [{}] {}".format(index, name))
    if not names:
        print("  No input devices found")

    print()
    if working:
        print("Run with: python main.py --camera {}".format(working[0]))


if __name__ == "__main__":
    main()
