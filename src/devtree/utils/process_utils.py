"""Process management utilities for signalling process trees."""

import os
import signal


def kill_process_tree(pid: int, sig: int = signal.SIGTERM) -> bool:
    """Send signal to the process group led by pid, falling back to the single process.

    Dev servers and hook steps are spawned with start_new_session=True, so pid
    is also the group id and the signal reaches the package manager and every
    server it forked, even after the leader itself has been reaped.

    Returns:
        False if nothing was left to signal, True otherwise.
    """
    try:
        os.killpg(pid, sig)
        return True
    except ProcessLookupError:
        # Not a group leader, or the whole group is gone
        pass
    except PermissionError:
        return True

    try:
        os.kill(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

