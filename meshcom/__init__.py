"""
meshcom package

Radio worker, event routing and session state for meshcom_live.py. The
curses front end stays in the entry script; everything here runs without a
terminal so it can be tested on its own.
"""

__version__ = "0.0.1"
