# Real-time bottle/can counting: detections or tripwire motion -> one count per item

__version__ = "0.1.0"
