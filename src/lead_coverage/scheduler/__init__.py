#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Scheduler Package

Cron-triggered population and stats jobs.
"""
