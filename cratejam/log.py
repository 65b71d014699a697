import sys
import threading

# debug options
_debug_levels = { 'error', 'warning', 'default' }
_valid_debug_levels = {'targets', 'depends', 'cause', 'commands', 'threads', 'verbose', 'phases', 'warning', 'error', 'debug', 'times', 'default'}

_print_lock = threading.Lock()

def dprint(level, *args, **kwargs):
    if level in _debug_levels:
        with _print_lock:
            print(*args, **kwargs)
            sys.stdout.flush()

def enable(levels):
    for level in levels or []:
        _debug_levels.add(level)

def disable(levels):
    for level in levels or []:
        _debug_levels.discard(level)

def enabled(level):
    return level in _debug_levels

def valid_levels():
    return sorted(_valid_debug_levels)
