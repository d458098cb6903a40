# (c) Copyright 2022 Aaron Kimball
#
# Methods and constants for working with the terminal and VT100 emulation,
# and the Printer output channels that command output flows through.

import readline
import sys

# Change this flag to enable/disable color formatting.
enable_colors = True

COLOR_WHITE     = '\033[0m'
COLOR_BOLD      = '\033[1m' # High-intensity white on black
COLOR_UNDERLINE = '\033[4m'
COLOR_INVERSE   = '\033[7m' # black on white

COLOR_GRAY      = '\033[90m'
COLOR_RED       = '\033[91m'
COLOR_GREEN     = '\033[92m'
COLOR_YELLOW    = '\033[93m'
COLOR_BLUE      = '\033[94m'
COLOR_PURPLE    = '\033[95m'
COLOR_CYAN      = '\033[96m'

BOLD      = COLOR_BOLD

INFO      = COLOR_WHITE
SUCCESS   = COLOR_GREEN
WARN      = COLOR_YELLOW
ERR       = COLOR_RED
LINK      = COLOR_CYAN

COLOR_OFF = COLOR_WHITE # Normal white on black

# Repl prompt.
PROMPT = "\r(heapdbg) "

def use_colors():
    """
    Return true if we should use color in formatting output.
    """
    return enable_colors

def set_use_colors(do_use_colors):
    global enable_colors
    enable_colors = bool(do_use_colors)

def fmt(text, color_code=None):
    """
    Return a string wrapped in the codes to enable a certain color, if use_colors is active.
    """
    if use_colors() and color_code is not None:
        return f'{color_code}{text}{COLOR_OFF}'
    else:
        return text

def write(text, color_code=None):
    """
    Print a string. The String is first wrapped in the codes to enable a certain color, if
    use_colors is active.
    """
    print(fmt(text, color_code))


class MsgLevel(object):
    """
    Priority level codes for messages submitted to a Printer; used to colorize
    messages appropriately.
    """
    INFO        = 0         # Standard message
    OUTPUT      = 1         # Regular command output.
    WARN        = 2         # Warnings
    ERR         = 3         # Errors
    DEBUG       = 4         # verboseprint() info from the execution context.
    SUCCESS     = 5         # Successful.
    LINK        = 6         # Clickable command reference.

    @staticmethod
    def color_for_msg(msg_level):
        """
        Return a term color for the message level.
        """
        if msg_level is None:
            return None

        if msg_level == MsgLevel.INFO:
            return INFO
        elif msg_level == MsgLevel.OUTPUT:
            return None
        elif msg_level == MsgLevel.WARN:
            return WARN
        elif msg_level == MsgLevel.ERR:
            return ERR
        elif msg_level == MsgLevel.DEBUG:
            return COLOR_GRAY
        elif msg_level == MsgLevel.SUCCESS:
            return SUCCESS
        elif msg_level == MsgLevel.LINK:
            return LINK
        else:
            return INFO


class Printer(object):
    """
    Output channel for an execution context.

    Subclasses implement _emit(); the public write_*() methods route text there with
    the appropriate MsgLevel. The execution context holds a Printer but does not
    construct it; it does release it (via close()) when the session ends.
    """

    def __init__(self):
        self._closed = False

    def _emit(self, text, level):
        raise NotImplementedError()

    def write_command_output(self, text):
        self._emit(text, MsgLevel.OUTPUT)

    def write_error(self, text):
        self._emit(text, MsgLevel.ERR)

    def write_warning(self, text):
        self._emit(text, MsgLevel.WARN)

    def write_info(self, text):
        self._emit(text, MsgLevel.INFO)

    def write_debug(self, text):
        self._emit(text, MsgLevel.DEBUG)

    def write_link(self, text):
        """
        Render a reference to a clickable command, e.g. '[a3]'.
        """
        self._emit(text, MsgLevel.LINK)

    def command_ended(self):
        """
        Called once after each single command dispatched by the execution context,
        whether it succeeded, failed, or could not be parsed.
        """
        pass

    def is_closed(self):
        return self._closed

    def close(self):
        self._closed = True


class ConsolePrinter(Printer):
    """
    Printer that writes to a terminal stream (stdout by default), colorized by message level.

    Text is written as-is; callers supply their own line terminators. If the last
    command left a partial line on the console, it is terminated when the command ends
    so the next prompt starts at column 0.
    """

    def __init__(self, stream=None):
        super().__init__()
        self._stream = stream or sys.stdout
        self._at_line_start = True

    def _emit(self, text, level):
        if not text:
            return

        color = MsgLevel.color_for_msg(level)
        if text.endswith('\n'):
            # Keep the color codes off the line terminator.
            out = fmt(text[:-1], color) + '\n'
        else:
            out = fmt(text, color)

        self._stream.write(out)
        self._at_line_start = text.endswith('\n')

    def command_ended(self):
        if not self._at_line_start:
            self._stream.write('\n')
            self._at_line_start = True
        self._stream.flush()

    def close(self):
        if self._closed:
            return
        self._stream.flush()
        super().close()


class NullPrinter(Printer):
    """
    Printer implementation that just silently discards all text it receives.
    """

    def _emit(self, text, level):
        pass


def readline_input(prompt=None):
    """
    Display readline-enabled prompt and return the input result.
    """
    return input(prompt if prompt is not None else PROMPT)


def get_line_buffer():
    """
    Return the text currently in the readline input buffer (for autocompletion).
    """
    return readline.get_line_buffer()
