#!/usr/bin/env python3
"""
Security Smoke Check
====================

Checks a running quiz engine for authentication and tenant scoping.
Tokens are minted locally with the server's SECRET_KEY, so run this with the
same environment as the server.

Usage:
    python smoke_security.py teacher@school.edu student@school.edu
"""

import sys
import logging

import requests

from quiz_engine.core.security import create_access_token

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"

PROTECTED_ENDPOINTS = [
    ("GET", "/api/quizzes/teacher"),
    ("GET", "/api/quizzes/student"),
    ("POST", "/api/quizzes"),
    ("POST", "/api/quizzes/1/attempt"),
]

def _headers(email):
    return {"Authorization": f"Bearer {create_access_token({'sub': email})}"}

def check_authentication():
    """Protected endpoints must reject requests without a bearer token."""
    logger.info("Checking authentication requirements...")
    ok = True
    for method, endpoint in PROTECTED_ENDPOINTS:
        response = requests.request(method, f"{BASE_URL}{endpoint}", json={})
        if response.status_code in (401, 403):
            logger.info(f"{method} {endpoint} requires authentication ({response.status_code})")
        else:
            logger.error(f"{method} {endpoint} should require authentication but returned {response.status_code}")
            ok = False
    return ok

def check_role_guards(teacher_email, student_email):
    """Students cannot use teacher endpoints and vice versa."""
    logger.info("Checking role guards...")
    ok = True
    response = requests.get(f"{BASE_URL}/api/quizzes/teacher", headers=_headers(student_email))
    if response.status_code != 403:
        logger.error(f"Student reached the teacher listing: {response.status_code}")
        ok = False
    response = requests.get(f"{BASE_URL}/api/quizzes/student", headers=_headers(teacher_email))
    if response.status_code != 403:
        logger.error(f"Teacher reached the student listing: {response.status_code}")
        ok = False
    return ok

def check_answer_keys_hidden(teacher_email, student_email):
    """Quiz views fetched by a student must not carry answer keys."""
    logger.info("Checking that answer keys are hidden from students...")
    listing = requests.get(f"{BASE_URL}/api/quizzes/teacher", headers=_headers(teacher_email))
    listing.raise_for_status()
    ok = True
    for quiz in listing.json()["quizzes"]:
        response = requests.get(f"{BASE_URL}/api/quizzes/{quiz['id']}", headers=_headers(student_email))
        if response.status_code != 200:
            continue
        view = response.json()["quiz"]
        if view["settings"]["show_correct_answers"]:
            continue
        for question in view["questions"]:
            if "correct_answer" in question or any("is_correct" in o for o in question["options"]):
                logger.error(f"Quiz {quiz['id']} leaks answer keys to students")
                ok = False
    return ok

def main():
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)
    teacher_email, student_email = sys.argv[1], sys.argv[2]

    try:
        results = [
            check_authentication(),
            check_role_guards(teacher_email, student_email),
            check_answer_keys_hidden(teacher_email, student_email),
        ]
    except requests.exceptions.ConnectionError:
        logger.error(f"Could not connect to {BASE_URL}. Is the server running?")
        sys.exit(1)

    if all(results):
        logger.info("Security smoke checks passed")
    else:
        logger.error("Security smoke checks failed")
        sys.exit(1)

if __name__ == "__main__":
    main()
