#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Fetching Package

Lead data source adapters and the bounded-concurrency batch executor
that drives them.
"""
