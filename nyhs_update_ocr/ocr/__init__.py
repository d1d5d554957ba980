#!/usr/bin/env python3
"""
NYHS OCR - Collection walk, page selection and extraction dispatch
"""
