#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Monitoring Package

Read-only analyses over the lead store: the partition universe, scarcity
detection with priority selection, and population statistics.
"""
