"""
rfp-extraction — RFP section classification, structured workbook and LED estimate

Scores OCR'd RFP sections for relevance, turns the relevant ones into a
five-sheet workbook (requirements, pricing, schedule, risks, assumptions)
with chunk citations, and prices LED displays from a rate table with
every formula spelled out.
"""

__version__ = "1.0.0"
__author__ = "rfp-extraction"
