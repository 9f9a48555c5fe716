"""
Streaming relay pipeline: upstream transports, reasoning multiplexer and
transcript checkpointer.
"""
