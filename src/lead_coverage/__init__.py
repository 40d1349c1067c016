#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Lead Coverage Monitor

Keeps a directory of business leads populated across every
industry/country partition by detecting scarce partitions and refilling
them on a schedule.
"""

__version__ = "0.3.0"
