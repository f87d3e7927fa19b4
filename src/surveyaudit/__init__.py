"""
Survey Audit Package

Cross-validates the three artifacts that describe one survey:

    - the SPSS system-file dictionary (variables, value labels, missing values)
    - the questionnaire text (question codes, answer codes, routing rules)
    - the response export (one row per respondent)

and reports logic defects in the collected data.

ARCHITECTURAL GUARANTEE:
------------------------
The core (decoder, analyzer, resolver, validator, summarizer) works on
already loaded bytes, text and rows. It contains ZERO knowledge of:
    - file formats of the questionnaire or the data export
    - presentation or export formatting
    - persistence

File access lives in `surveyaudit.sources`, export in
`surveyaudit.serialization`, orchestration in `surveyaudit.pipeline`.
"""

__version__ = "0.1.0"
