"""Supabase client. One per browser session for the app (auth state lives on it), uncached for scripts."""
import os

import streamlit as st
from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()


def get_supabase_credentials() -> tuple[str, str]:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return url, key


def _env_client() -> Client:
    url, key = get_supabase_credentials()
    return create_client(url, key)


def get_supabase() -> Client:
    """Client for the current Streamlit session."""
    if "supabase" not in st.session_state:
        st.session_state["supabase"] = _env_client()
    return st.session_state["supabase"]


def get_supabase_uncached() -> Client:
    """For CLI/scripts (no Streamlit context)."""
    return _env_client()
