from switchboard.worker.runner import run

run()
