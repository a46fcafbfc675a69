from pydantic import BaseModel


class ApiModel(BaseModel):
    cors_origins: list[str] = ["http://localhost:5173"]
    """Origins allowed to call the API from a browser, the Vite dev server by default."""
