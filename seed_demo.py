# seed_demo.py
import os

import requests

BASE_URL = os.getenv("LIBRARY_BASE_URL", "http://localhost:3019")
SERVICE_API_KEY = os.getenv("SERVICE_API_KEY", "dev-service-key")

BOOKS = [
    {"isbn": "978-0441172719", "title": "Dune", "author": "Frank Herbert"},
    {"isbn": "978-0132350884", "title": "Clean Code", "author": "Robert C. Martin"},
    {"isbn": "978-0201616224", "title": "The Pragmatic Programmer", "author": "Andrew Hunt, David Thomas"},
    {"isbn": "978-0131103627", "title": "The C Programming Language", "author": "Brian W. Kernighan, Dennis M. Ritchie"},
    {"isbn": "978-0134685991", "title": "Effective Java", "author": "Joshua Bloch"},
    {"isbn": "978-0262033848", "title": "Introduction to Algorithms", "author": "Cormen, Leiserson, Rivest, Stein"},
    {"isbn": "978-1491950357", "title": "Designing Data-Intensive Applications", "author": "Martin Kleppmann"},
    {"isbn": "978-0451524935", "title": "1984", "author": "George Orwell"},
    {"isbn": "978-0061120084", "title": "To Kill a Mockingbird", "author": "Harper Lee"},
    {"isbn": "978-0547928227", "title": "The Hobbit", "author": "J. R. R. Tolkien"},
]


def check_service(url):
    """Hit /api/health and return True/False."""
    health_url = f"{url.rstrip('/')}/api/health"
    try:
        r = requests.get(health_url, timeout=3)
        print(f"[CHECK] {health_url} -> {r.status_code}")
        return r.ok
    except requests.RequestException as e:
        print(f"[ERROR] library service not reachable at {health_url}: {e}")
        return False


def seed_books(url):
    print(f"\n== Seeding books into {url} ==")
    ok = True
    for i, book in enumerate(BOOKS, start=1):
        try:
            resp = requests.post(
                f"{url.rstrip('/')}/api/books",
                headers={"X-API-Key": SERVICE_API_KEY},
                json=book,
                timeout=5,
            )
            print(f"  [{i:02}] {book['title']} -> {resp.status_code}")
            if not resp.ok:
                print(f"      Body: {resp.text.strip()}")
                ok = False
        except requests.RequestException as e:
            print(f"  [{i:02}] {book['title']} -> FAILED: {e}")
            ok = False
    return ok


def main():
    print("Checking library service...")
    if not check_service(BASE_URL):
        print("\nLibrary service is not reachable. Start it with: python -m library_service.app")
        return

    seed_books(BASE_URL)

    print("\nDone.")
    print(f"Sign up at {BASE_URL}/signup and browse {BASE_URL}/contents")


if __name__ == "__main__":
    main()
