"""
XhoraProc - Proctored multiple-choice examination service

Runs a timed exam while sampling a camera and a microphone, turning
face/gaze and loudness readings into an append-only log of integrity
violations stored against the exam session.
"""

__version__ = "1.0.0"
