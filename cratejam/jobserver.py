# python's subprocess creation speed depends on the main processes memory consumption
# (due to mmap'ing magic). With a big target graph the overhead of spawning a compiler
# grows with it, so processes are launched from small helper processes instead.

from multiprocessing import Process, Queue
from subprocess import Popen, PIPE, STDOUT
from collections import deque
import threading

def _cmdloop(inQueue, outQueue):
    while True:
        request = inQueue.get()
        if request is None:
            return
        args, kwargs = request
        kwargs["stderr"] = STDOUT
        kwargs["stdout"] = PIPE
        kwargs["stdin"] = None
        try:
            process = Popen(*args, **kwargs)
        except OSError as e:
            outQueue.put((str(e), 127))
            continue
        with process:
            output = process.stdout.read().decode("utf-8", "replace")
        outQueue.put((output, process.returncode))

class JobHandle(object):
    def __init__(s, queue, pool, server):
        s.queue = queue
        s.pool = pool
        s.server = server

    def wait(s):
        res = s.queue.get()
        s.pool.release(s.server)
        return res

class JobServer(object):
    def __init__(s):
        s.inQueue = Queue()
        s.outQueue = Queue()
        s.cmdHostProcess = Process(target=_cmdloop, args=(s.inQueue, s.outQueue), daemon=True)
        s.cmdHostProcess.start()

    def runcmd(s, *args, **kwargs):
        s.inQueue.put((args, kwargs))
        return s.outQueue

    def killCmdHostProcess(s):
        s.inQueue.put(None)
        s.cmdHostProcess.join(1)
        if s.cmdHostProcess.is_alive():
            s.cmdHostProcess.terminate()

class JobServerPool(object):
    def __init__(s, n):
        s.pool = deque()
        s.all = []
        s.available = threading.Semaphore(n)
        for i in range(0, n):
            server = JobServer()
            s.pool.append(server)
            s.all.append(server)

    def destroy(s):
        s.pool.clear()
        while s.all:
            s.all.pop().killCmdHostProcess()

    def release(s, server):
        s.pool.append(server)
        s.available.release()

    def runcmd(s, *args, **kwargs):
        s.available.acquire()
        server = s.pool.pop()
        queue = server.runcmd(*args, **kwargs)
        return JobHandle(queue, s, server)

    def callCommand(s, argv, env=None, cwd=None):
        """Run argv to completion, return (output, returncode)."""
        return s.runcmd(argv, env=env, cwd=cwd).wait()
