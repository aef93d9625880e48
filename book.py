from __future__ import annotations


class Book:
    """A catalog entry and its copy counts."""

    def __init__(self, isbn: str, title: str, authors: str | None = None, year: int | None = None,
                 category: str | None = None, publisher: str | None = None,
                 total_copies: int = 1, available: int | None = None) -> None:
        self.isbn = isbn.strip()
        self.title = title.strip()
        self.authors = authors.strip() if authors else authors
        self.year = year
        self.category = category
        self.publisher = publisher
        self.total_copies = total_copies
        # New catalog entries start with every copy on the shelf
        self.available = total_copies if available is None else available

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.authors} (ISBN: {self.isbn})"

    @property
    def on_loan(self) -> int:
        return self.total_copies - self.available

    def to_dict(self) -> dict:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "authors": self.authors,
            "year": self.year,
            "category": self.category,
            "publisher": self.publisher,
            "total_copies": self.total_copies,
            "available": self.available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            isbn=data["isbn"],
            title=data["title"],
            authors=data.get("authors"),
            year=data.get("year"),
            category=data.get("category"),
            publisher=data.get("publisher"),
            total_copies=data.get("total_copies", 1),
            available=data.get("available"),
        )
