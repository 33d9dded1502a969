from pydantic import BaseModel


class Project(BaseModel):
    id: int
    path_with_namespace: str
    git_http_url: str
    web_url: str | None = None


class PushHookEvent(BaseModel):
    object_kind: str
    ref: str
    before: str
    after: str
    checkout_sha: str | None = None
    user_username: str | None = None
    project_id: int
    project: Project
