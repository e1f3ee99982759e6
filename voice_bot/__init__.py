"""
Voice bot for LiveKit rooms.

Listens to one speaker at a time, transcribes each spoken segment, answers
utterances that open with a trigger phrase and speaks the reply back into
the room: capture -> STT -> trigger check -> LLM -> TTS -> playback.

Per room:
- at most one conversational turn in flight, extra segments are dropped
- a rolling history of the last 10 exchanges feeds the language model
- temporary audio files are always released after use
"""
