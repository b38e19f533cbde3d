"""
Citation-aware chat message pipeline.

Raw stored turns flow through 'transformer' into 'NormalizedMessage' objects,
are cached per session by 'store', are produced by the visitor through the
send/await state machine in 'protocol', and their citations are opened in the
source viewer by 'navigation'.
"""
