"""Unit tests for the script runtime.

Fast, isolated tests for individual components.
No network: the control plane is stubbed with responses.
"""
