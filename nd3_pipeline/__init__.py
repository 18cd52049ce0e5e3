"""
ND3 Capture Ingestion Pipeline

Turns capture archives dropped into a watched directory into processed
capture folders with point clouds and a meta.json record.

Pipeline stages:
1. Watch - Detect archives and wait until they stop growing
2. Extract - Unpack the archive into a fresh output directory
3. Tools - Channel split, raw conversion and ND3 reconstruction
4. Metadata - Classify outputs and decode capture parameters
5. Persist - Store the record and notify listeners
"""

__version__ = "0.1.0"
