"""
TamperGuard CLI

Terminal controller for running and watching the TamperGuard
detection pipeline.
"""

__version__ = '0.1.0'

from .status_display import LiveMonitor, create_header, create_channel_table
