"""
Message Grouping Module
========================

Turns a stream of chat messages into tickets.

Each message is classified by intent. Actionable messages get a topic
(group key plus summary) and are attached to a matching open ticket or
start a new one. Everything is stored, including messages that are not
actionable and messages whose grouping failed.
"""
