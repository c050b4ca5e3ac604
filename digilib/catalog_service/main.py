# digilib/catalog_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Catalog Service (dev mock)")


BOOKS = {
    1: {"id": 1, "title": "Introduction to Algorithms", "author": "Cormen", "file_ref": "uploads/books/1.pdf"},
    2: {"id": 2, "title": "Clean Code", "author": "Robert C. Martin", "file_ref": "uploads/books/clean_code.pdf"},
    3: {"id": 3, "title": "Open Data Structures", "author": "Pat Morin", "file_ref": "https://opendatastructures.org/ods-python.pdf"},
}


@app.get("/books/{book_id}")
def get_book(book_id: int):
    book = BOOKS.get(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book
