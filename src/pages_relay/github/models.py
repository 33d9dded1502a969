from pydantic import BaseModel


class User(BaseModel):
    login: str


class Repository(BaseModel):
    id: int
    url: str
    full_name: str
    clone_url: str
    default_branch: str | None = None


class Pusher(BaseModel):
    name: str


class HeadCommit(BaseModel):
    id: str
    message: str = ""


class PushEvent(BaseModel):
    ref: str
    before: str
    after: str
    deleted: bool = False
    repository: Repository
    pusher: Pusher
    sender: User
    head_commit: HeadCommit | None = None


class CommitStatusPayload(BaseModel):
    state: str  # pending|success|failure|error
    description: str
    context: str
    target_url: str | None = None
