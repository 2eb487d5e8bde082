from fastapi import Request

from jobs import JobQueue

def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue
