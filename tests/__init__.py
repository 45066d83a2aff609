"""mongo-export-extractor test suite.

Test organization:
- unit/: codec, command line, decoder, writers, configuration, watermark
- integration/: full extraction runs against a stand-in mongoexport script
- helpers.py: the stand-in mongoexport shared by both
"""
