"""
GoPro fleet control over COHN (Camera on Home Network)
"""
__version__ = "1.0.0"
