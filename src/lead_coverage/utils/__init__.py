#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Utilities Package

Logging, deadlines and lead storage shared across the monitor.
"""
