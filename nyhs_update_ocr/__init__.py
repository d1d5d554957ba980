#!/usr/bin/env python3
"""
NYHS Update OCR

Purpose:
- Find page nodes under an Islandora collection that have no extracted text
- Queue an OCR text extraction request for each of them
"""
