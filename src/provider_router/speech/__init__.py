"""
Speech Text Planning.

    - tokenizer.py: Script-aware token estimation (CJK exact, Latin by word)
    - planner.py: Sentence packing, truncation and audio stitching
"""
