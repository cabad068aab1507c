# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Last-resort handling for exceptions which have no caller to propagate to"""
import logging

logger = logging.getLogger(__name__)


def handle_background_exception(e):
    """
    Report an exception raised on a background thread (worker, dispatcher or sweeper) which
    nobody else can catch.

    Runs on whichever thread caught the exception, so it does nothing beyond logging.

    :param Exception e: The exception caught on the background thread
    """
    logger.error("Exception caught in background thread.  Unable to handle.", exc_info=e)


def swallow_unraised_exception(e, log_msg=None, log_lvl=logging.WARNING):
    """Log an exception, with its traceback, which is being deliberately discarded.

    :param Exception e: The discarded exception.
    :param str log_msg: Message logged along with it.
    :param int log_lvl: Logging level, WARNING unless given.
    """
    logger.log(log_lvl, log_msg, exc_info=(type(e), e, e.__traceback__))
