"""
SunSpec Engine Services

Service layers:
1. Device Service - Pooled Modbus I/O, model location, point decode/encode
2. Discovery Service - Address range scanning and unit classification
3. Polling - Periodic reads with failure backoff
"""
