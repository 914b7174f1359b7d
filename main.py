"""
EduGenie - Backend API
======================

Project: AI study assistant for students
File: main.py
Purpose: FastAPI backend for tutoring chat, document Q&A, notes, quizzes,
         timetables, reminders, course search and Google Calendar sync

Features:
- Tutor chat and document chat with chunked continuation ([[CONTINUE]])
- Streaming study notes (plain-text stream of HTML fragments)
- Adaptive quizzes that target weaknesses from previous attempts
- Timetable generation and per-user storage in Supabase
- Natural-language reminder parsing
- Email OTP verification, course search, Google Calendar events

Architecture:
- FastAPI for the JSON API and streamed responses
- Anthropic Claude API for all AI generation
- Supabase for auth checks and per-user rows (RLS via bearer token)
- Every error leaves the API as {"error": "..."}

Dependencies:
- fastapi: Web framework
- anthropic: Claude API client
- uvicorn: ASGI server
- python-dotenv: Environment variable management
- supabase, httpx, google-api-python-client: integrations

Environment Variables Required:
- ANTHROPIC_API_KEY: Your Anthropic API key
- SUPABASE_URL / SUPABASE_ANON_KEY: for any per-user route

Author: EduGenie Team
"""

import asyncio
import re
import traceback
from datetime import datetime, timezone

import anthropic
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import courses
import database
import google_calendar
import quiz
import reminder
import schedule
from config import config
from continuation import (
    DOCUMENT_CHAT_BUDGET,
    NOTES_BUDGET,
    TUTOR_BUDGET,
    EmptyCompletionError,
    compose_turns,
    stitch_completion,
    stream_completion,
)
from document_extractor import DocumentExtractor
from file_utils import FileValidator
from otp import PURPOSES, OTPError, is_valid_email, otp_store, send_code_email

# Initialize FastAPI app
app = FastAPI(title="EduGenie")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SCHEDULE_STORAGE_ACTIONS = {"save", "load_list", "load_one", "update", "delete"}


# ============================================================================
# ERROR HANDLING
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Every error response has the shape {"error": "..."}"""
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


async def read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    return body


def fail(area: str, e: Exception):
    """
    Log a route failure and re-raise it as an HTTPException

    Raises:
        HTTPException: 429 when the provider quota is exhausted, otherwise 500
    """
    if isinstance(e, HTTPException):
        raise e

    print(f"[{area}] Error: {str(e)}")
    traceback.print_exc()

    if isinstance(e, anthropic.RateLimitError):
        raise HTTPException(status_code=429, detail="Quota exceeded")
    if isinstance(e, EmptyCompletionError):
        raise HTTPException(status_code=500, detail="AI returned an empty response")
    raise HTTPException(status_code=500, detail=str(e) if str(e) else "Internal server error")


def is_blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


async def run_blocking(fn, *args):
    """Run a blocking Supabase or Google API call in the default executor"""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, lambda: fn(*args))


# ============================================================================
# PROMPTS
# ============================================================================

def tutor_prompt(language: str) -> str:
    return f"""You are an expert AI tutor for engineering students. Answer concisely and clearly in {language}.
Use examples, step-by-step explanations, and check for understanding. If the user asks for code, provide runnable snippets.
IMPORTANT: Return plain text only. Do not use Markdown styling characters such as "**", "&" or "#"."""


def document_chat_prompt(files: list) -> str:
    names = ", ".join(f.get("name") or f"Document {i}" for i, f in enumerate(files, 1))
    subject = "a document" if len(files) == 1 else f"{len(files)} documents"
    return f"""You are a helpful AI assistant specialized in explaining and answering questions about documents.
You are currently helping the user understand {subject} named: {names}.

IMPORTANT FORMATTING INSTRUCTIONS:
- Use proper Markdown formatting for clear, structured responses
- Use **bold** for emphasis and important terms
- Use headings (## Heading) to organize your answers
- Use bullet points (- item) or numbered lists (1. item) when listing things
- When providing code, ALWAYS wrap it in code blocks with the language specified
- Use inline code (`code`) for short code snippets or technical terms
- Use > for important notes or quotes
- When answering from multiple documents, mention which document you're referencing
- If the user asks about something not in the documents, let them know politely
- Keep your responses well-structured and easy to read"""


def notes_prompt(context: str) -> str:
    return f"""You are an AI assistant that writes structured content for a rich-text editor.

Decide what the user wants:
1. Study notes, summaries or explanations (default): informative content as
   standard bullet lists, e.g.
   <ul><li><strong>Router:</strong> A device that forwards packets between networks.</li></ul>
2. Task lists, checklists or plans (only when explicitly asked):
   <ul data-type="taskList"><li data-type="taskItem" data-checked="false">Install Node.js</li></ul>

HTML OUTPUT RULES:
- Output raw HTML only. No Markdown and no code fences.
- Compact output: no empty lines, no empty <li> or <p> tags, no <br>.
- Use <h2> for section headers only when needed and <strong> for key terms.

Context provided: {context or 'None'}"""


def clean_tutor_text(text: str) -> str:
    """Drop *, & and # and collapse runs of whitespace"""
    return re.sub(r"\s{2,}", " ", re.sub(r"[*&#]+", "", text)).strip()


# ============================================================================
# CHAT
# ============================================================================

@app.post("/api/generate")
async def tutor_chat(request: Request):
    """
    AI tutor chat

    Body: {message, language, history, continue}
    Returns: {text, hasMore}
    """
    body = await read_json(request)
    message = body.get("message") or ""
    continue_request = bool(body.get("continue"))

    if not continue_request and is_blank(message):
        raise HTTPException(status_code=400, detail="Message is required")

    try:
        turns = compose_turns(
            tutor_prompt(body.get("language") or "English"),
            TUTOR_BUDGET,
            message=message,
            history=body.get("history"),
            continue_request=continue_request,
        )
        result = await stitch_completion(turns, TUTOR_BUDGET)
        print(f"[tutor] Replied in {result.chunk_count} chunk(s), hasMore={result.has_more}")

        return JSONResponse({"text": clean_tutor_text(result.text), "hasMore": result.has_more})

    except Exception as e:
        fail("tutor", e)


@app.post("/api/chat-pdf")
async def chat_with_documents(request: Request):
    """
    Answer questions about uploaded documents

    Body: {message, files: [{name, content}], conversationHistory, continue}
    Returns: {response, hasMore}
    """
    body = await read_json(request)
    message = body.get("message") or ""
    files = body.get("files")
    continue_request = bool(body.get("continue"))

    if (not continue_request and is_blank(message)) or not isinstance(files, list) or not files:
        raise HTTPException(status_code=400, detail="Message and files are required")

    documents = [
        f for f in files
        if isinstance(f, dict) and isinstance(f.get("content"), str) and isinstance(f.get("name") or "", str)
    ]
    if len(documents) != len(files):
        raise HTTPException(status_code=400, detail="Each file needs a text content and a string name")

    try:
        print(f"[chat-pdf] Question over {len(documents)} document(s)")
        turns = compose_turns(
            document_chat_prompt(documents),
            DOCUMENT_CHAT_BUDGET,
            message=message,
            history=body.get("conversationHistory"),
            documents=documents,
            continue_request=continue_request,
        )
        result = await stitch_completion(turns, DOCUMENT_CHAT_BUDGET)
        print(f"[chat-pdf] Replied in {result.chunk_count} chunk(s), hasMore={result.has_more}")

        return JSONResponse({"response": result.text, "hasMore": result.has_more})

    except Exception as e:
        fail("chat-pdf", e)


@app.post("/api/extract-document")
async def extract_document(file: UploadFile = File(...)):
    """
    Upload a document and return its text for document chat
    Supports: PDF, DOCX, PPTX, TXT
    """
    print(f"[extract] Received document upload: {file.filename}")
    file_bytes = await FileValidator.validate_document(file)

    try:
        content, file_type = DocumentExtractor.extract_text(file_bytes, file.filename)
    except ValueError as e:
        print(f"[extract] Extraction failed: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))

    print(f"[extract] Extracted {len(content)} characters from {file_type}")
    return JSONResponse({
        "name": file.filename,
        "content": content,
        "fileType": file_type,
        "characters": len(content),
        "size": FileValidator.format_file_size(len(file_bytes)),
    })


# ============================================================================
# NOTES (STREAMED)
# ============================================================================

@app.post("/api/generate-notes")
async def generate_notes(request: Request):
    """
    Stream HTML study notes as text/plain fragments

    Errors before the first fragment become a JSON error; later errors end
    the stream.
    """
    body = await read_json(request)
    prompt = body.get("prompt")
    if is_blank(prompt):
        raise HTTPException(status_code=400, detail="Prompt is required")

    turns = compose_turns(notes_prompt(body.get("context") or ""), NOTES_BUDGET, message=prompt)
    fragments = stream_completion(turns, NOTES_BUDGET, model=config.ANTHROPIC_FAST_MODEL)

    try:
        first = await fragments.__anext__()
    except StopAsyncIteration:
        fail("notes", EmptyCompletionError("AI returned an empty response"))
    except Exception as e:
        fail("notes", e)

    async def note_stream():
        yield first
        try:
            async for fragment in fragments:
                yield fragment
        except Exception as e:
            print(f"[notes] Stream error: {str(e)}")
            traceback.print_exc()

    return StreamingResponse(
        note_stream(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# QUIZ
# ============================================================================

@app.post("/api/generate-quiz")
async def generate_quiz(request: Request):
    """
    action "generate": {topic, language, questionCount, previousResults} -> quiz
    action "analyze": {topic, quizData, userAnswers} -> analysis with score
    """
    body = await read_json(request)
    action = body.get("action") or "generate"
    topic = body.get("topic")

    if is_blank(topic):
        raise HTTPException(status_code=400, detail="Topic is required")
    if action not in ("generate", "analyze"):
        raise HTTPException(status_code=400, detail="Invalid action")

    try:
        if action == "analyze":
            quiz_data = body.get("quizData")
            if not quiz_data:
                raise HTTPException(status_code=400, detail="quizData is required")
            result = await quiz.analyze_quiz(
                topic.strip(),
                quiz.normalize_quiz(quiz_data, topic.strip()),
                body.get("userAnswers") or {},
            )
            return JSONResponse(result)

        try:
            question_count = int(body.get("questionCount") or 10)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="questionCount must be a number")

        result = await quiz.generate_quiz(
            topic.strip(),
            language=body.get("language") or "English",
            question_count=max(1, min(question_count, 30)),
            previous_results=body.get("previousResults") or [],
        )
        return JSONResponse(result)

    except Exception as e:
        fail("quiz", e)


# ============================================================================
# SCHEDULE
# ============================================================================

@app.post("/api/generate-schedule")
async def schedule_actions(request: Request):
    """
    action "generate": {prompt} -> {schedule}
    action "save" | "load_list" | "load_one" | "update" | "delete":
        {userId, accessToken, id?, name?, schedule?} -> {data} or {success}
    """
    body = await read_json(request)
    action = body.get("action")

    if action == "generate":
        prompt = body.get("prompt")
        if is_blank(prompt):
            raise HTTPException(status_code=400, detail="Prompt is required")
        try:
            return JSONResponse({"schedule": await schedule.generate_schedule(prompt)})
        except Exception as e:
            fail("schedule", e)

    if action not in SCHEDULE_STORAGE_ACTIONS:
        raise HTTPException(status_code=400, detail="Invalid action")

    user_id = body.get("userId")
    access_token = body.get("accessToken")
    if not user_id or not access_token:
        raise HTTPException(status_code=401, detail="Unauthorized: No user authenticated.")

    try:
        if action == "save":
            data = await run_blocking(
                schedule.save_schedule, access_token, user_id, body.get("schedule") or [], body.get("name") or ""
            )
            return JSONResponse({"data": data})
        if action == "load_list":
            return JSONResponse({"data": await run_blocking(schedule.list_schedules, access_token, user_id)})
        if action == "load_one":
            data = await run_blocking(schedule.load_schedule, access_token, user_id, body.get("id"))
            return JSONResponse({"data": data})
        if action == "update":
            await run_blocking(
                schedule.update_schedule,
                access_token, user_id, body.get("id"), body.get("schedule") or [], body.get("name") or "",
            )
            return JSONResponse({"success": True})

        await run_blocking(schedule.delete_schedule, access_token, user_id, body.get("id"))
        return JSONResponse({"success": True})

    except Exception as e:
        fail("schedule", e)


# ============================================================================
# REMINDERS
# ============================================================================

@app.post("/api/reminder/parse")
async def parse_reminder(request: Request):
    """Turn a chat message into a reminder object (or isReminder: false)"""
    body = await read_json(request)
    text = body.get("text")
    if is_blank(text):
        raise HTTPException(status_code=400, detail="Missing text")

    try:
        result = await reminder.parse_reminder(text, body.get("timeZone"), body.get("nowIso"))
        return JSONResponse(result)
    except Exception as e:
        fail("reminder", e)


# ============================================================================
# ACCOUNTS
# ============================================================================

@app.post("/api/send-otp")
async def send_otp(request: Request):
    body = await read_json(request)
    email = body.get("email")
    purpose = body.get("purpose")

    if is_blank(email) or not purpose:
        raise HTTPException(status_code=400, detail="Email and purpose are required")
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if purpose not in PURPOSES:
        raise HTTPException(status_code=400, detail="Invalid OTP purpose")

    code = otp_store.issue(email, purpose)
    try:
        await send_code_email(email, code, purpose)
    except Exception as e:
        otp_store.discard(email)
        print(f"[otp] Failed to send email: {str(e)}")
        traceback.print_exc()
        raise HTTPException(status_code=500, detail="Failed to send OTP email. Please try again.")

    return JSONResponse({"success": True, "message": "OTP sent successfully to your email"})


@app.put("/api/send-otp")
async def verify_otp(request: Request):
    body = await read_json(request)
    email = body.get("email")
    code = body.get("otp")
    purpose = body.get("purpose")

    if is_blank(email) or not code or not purpose:
        raise HTTPException(status_code=400, detail="Email, OTP, and purpose are required")

    try:
        otp_store.verify(email, str(code), purpose)
    except OTPError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return JSONResponse({"success": True, "message": "OTP verified successfully"})


@app.put("/api/update-skills")
async def update_skills(request: Request):
    body = await read_json(request)
    user_id = body.get("userId")
    skills = body.get("skills")

    if not user_id or not isinstance(skills, list):
        raise HTTPException(status_code=400, detail="userId and skills array are required")

    try:
        data = await run_blocking(database.update_skills, user_id, skills, datetime.now(timezone.utc).isoformat())
    except Exception as e:
        print(f"[skills] Error updating skills: {str(e)}")
        traceback.print_exc()
        raise HTTPException(status_code=500, detail="Failed to update skills")

    return JSONResponse({"success": True, "message": "Skills updated successfully", "data": data})


# ============================================================================
# COURSES
# ============================================================================

@app.post("/api/search-courses")
async def search_courses(request: Request):
    body = await read_json(request)
    query = body.get("searchQuery")
    if is_blank(query):
        raise HTTPException(status_code=400, detail="Search query is required")

    try:
        found = await courses.search_courses(query)
    except courses.CourseSearchError as e:
        print(f"[courses] {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch courses from Udemy")

    if not found:
        raise HTTPException(status_code=404, detail="No courses found on Udemy")
    return JSONResponse(found)


@app.post("/api/proxy-courses")
async def proxy_courses(request: Request):
    body = await read_json(request)
    topic = body.get("topic")
    if is_blank(topic):
        raise HTTPException(status_code=400, detail="Topic is required")

    try:
        return JSONResponse(await courses.proxy_course_search(topic))
    except courses.UpstreamError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        fail("proxy", e)


# ============================================================================
# GOOGLE CALENDAR
# ============================================================================

async def calendar_for(user_id: str, access_token: str):
    """
    Calendar client for a verified user

    Raises:
        HTTPException: 401 for a token that isn't the user's, 400 when the
            user never connected Google Calendar
    """
    if not await run_blocking(database.verify_user, access_token, user_id):
        raise HTTPException(status_code=401, detail="Invalid user")
    try:
        refresh_token = await run_blocking(google_calendar.refresh_token_for, user_id)
    except google_calendar.CalendarNotConnected as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await run_blocking(google_calendar.calendar_service, refresh_token)


@app.post("/api/google/oauth")
async def google_oauth(request: Request):
    body = await read_json(request)
    user_id = body.get("userId")
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing userId")

    try:
        url = google_calendar.authorization_url(user_id, body.get("nextPath"), body.get("currentView"))
        return JSONResponse({"url": url})
    except Exception as e:
        fail("google", e)


@app.get("/api/google/callback")
async def google_callback(code: str = "", state: str = ""):
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    try:
        payload = google_calendar.verify_state(state)
    except google_calendar.StateError as e:
        print(f"[google] Rejected OAuth state: {str(e)}")
        raise HTTPException(status_code=400, detail="Invalid state payload")
    except Exception as e:
        fail("google", e)

    try:
        credentials = await run_blocking(google_calendar.exchange_code, code)
        if not credentials.refresh_token:
            raise HTTPException(status_code=400, detail="Missing refresh token")
        await run_blocking(google_calendar.store_tokens, payload["userId"], credentials)
        print(f"[google] Connected calendar for user {payload['userId']}")
        return RedirectResponse(google_calendar.redirect_after_connect(payload), status_code=302)
    except Exception as e:
        fail("google", e)


@app.post("/api/google/status")
async def google_status(request: Request):
    body = await read_json(request)
    user_id = body.get("userId")
    access_token = body.get("accessToken")
    if not user_id or not access_token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        connected = await run_blocking(google_calendar.is_connected, access_token, user_id)
        return JSONResponse({"connected": connected})
    except Exception as e:
        fail("google", e)


@app.post("/api/google/add-event")
async def google_add_event(request: Request):
    body = await read_json(request)
    user_id = body.get("userId")
    access_token = body.get("accessToken")
    event = body.get("event")

    if not user_id or not access_token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    missing = google_calendar.missing_event_fields(event if isinstance(event, dict) else None)
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

    try:
        event_body = google_calendar.build_event_body(event)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        service = await calendar_for(user_id, access_token)
        event_id = await run_blocking(google_calendar.insert_event, service, event_body)
        return JSONResponse({"success": True, "eventId": event_id})
    except Exception as e:
        fail("google", e)


@app.post("/api/google/list-events")
async def google_list_events(request: Request):
    body = await read_json(request)
    user_id = body.get("userId")
    access_token = body.get("accessToken")
    day = body.get("date")

    if not user_id or not access_token or not day:
        raise HTTPException(status_code=400, detail="Missing required fields")

    time_zone = body.get("timeZone")
    try:
        google_calendar.day_bounds(day, time_zone)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid date format. Expected YYYY-MM-DD")

    try:
        service = await calendar_for(user_id, access_token)
        events = await run_blocking(google_calendar.list_events, service, day, time_zone)
        return JSONResponse({"success": True, "count": len(events), "events": events})
    except Exception as e:
        fail("google", e)


# ============================================================================
# SERVICE
# ============================================================================

@app.get("/config")
async def get_config():
    """
    Return public limits for the frontend
    """
    budgets = {
        "tutor": TUTOR_BUDGET,
        "documentChat": DOCUMENT_CHAT_BUDGET,
        "notes": NOTES_BUDGET,
    }
    return JSONResponse({
        "max_document_size_mb": config.MAX_DOCUMENT_SIZE / (1024 * 1024),
        "supported_document_formats": sorted(config.DOCUMENT_FORMATS),
        "model": config.ANTHROPIC_MODEL,
        "fast_model": config.ANTHROPIC_FAST_MODEL,
        "budgets": {
            name: {"max_output_tokens": b.max_output_tokens, "max_chunks": b.max_chunks}
            for name, b in budgets.items()
        },
    })


@app.get("/health")
async def health_check():
    """
    Health check endpoint
    """
    return {"status": "healthy", "message": "EduGenie backend is running"}


if __name__ == "__main__":
    import uvicorn
    try:
        config.validate()
    except ValueError as e:
        print(f"Warning: {e}")
    print("Starting EduGenie backend...")
    print("API available at: http://localhost:8000")
    uvicorn.run(app, host="0.0.0.0", port=8000)
