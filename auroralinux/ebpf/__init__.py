"""Kernel-traced process, file, network and bpf() events: records, fields and the listener."""