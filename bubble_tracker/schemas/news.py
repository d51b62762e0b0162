from pydantic import BaseModel


class NewsItem(BaseModel):
    datetime: int
    headline: str
    source: str = ""
    url: str = ""
    summary: str | None = None
    image: str | None = None
    category: str | None = None


class CompanyNews(BaseModel):
    symbol: str
    items: list[NewsItem]
    error: str | None = None
