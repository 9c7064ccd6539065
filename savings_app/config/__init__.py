"""
Configuration module.

Frozen dataclass defaults, YAML and environment overrides, and validation.
"""
