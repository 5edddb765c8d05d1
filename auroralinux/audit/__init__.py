"""Parsing, grouping and reading of Linux auditd log records."""