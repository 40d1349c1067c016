#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Orchestration Package

Binds scarcity detection, priority selection and batch fetching into the
population jobs, and runs detached operator requests in a bounded pool.
"""
