"""Layer archive engine.

This module computes changes between layer trees and streams them as tar.
It also replays layer archives onto directories with owner remapping.
"""
