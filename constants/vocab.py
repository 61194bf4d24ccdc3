"""
Word lists used by the extractors and the write firewall.

Everything here is read-only. Tenants can extend the name stop words through
config (see engine.identity.merged_stop_words); nothing mutates these sets.
"""
from __future__ import annotations

NAME_STOP_WORDS = frozenset({
    # articles, fillers, pronouns
    "is", "are", "was", "were", "be", "been", "am",
    "the", "my", "its", "it's", "a", "an", "name", "last", "first",
    "hi", "hello", "hey", "please", "thanks", "thank", "you",
    "it", "that", "this", "what", "and", "or", "but", "to", "for", "with",
    "there", "uh", "um", "so", "well", "just", "they", "them", "we", "us",
    # affirmations / denials
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "no", "nope",
    "correct", "right", "fine", "perfect", "alright", "ready", "done", "gotcha",
    # meta statements ("I just told you my name")
    "told", "said", "gave", "already", "mentioned", "repeat",
    # tenure / relationship words ("I'm a longtime customer")
    "longtime", "regular", "returning", "customer", "client", "homeowner",
    "resident", "tenant", "owner", "caller", "sir", "maam", "ma'am",
    "mr", "mrs", "ms", "miss", "mister",
    # time words ("good morning")
    "morning", "afternoon", "evening", "night", "today", "tomorrow",
    "early", "soon", "asap", "now", "later",
    # service words
    "service", "appointment", "schedule", "technician", "tech", "visit",
    "help", "support", "problem", "issue", "trouble",
    # verbs that follow "I'm ..."
    "having", "calling", "looking", "trying", "needing", "wanting",
    "wondering", "waiting", "working", "running", "going", "coming",
    # intensifiers ("it's super hot")
    "super", "very", "really", "pretty", "quite", "totally", "actually",
    "currently", "still", "not", "here",
    # correction words ("no, the name is wrong")
    "wrong", "incorrect", "misspelled", "spelled", "change", "fix", "update", "different",
    # address components ("12155 Metro Parkway")
    "street", "st", "avenue", "ave", "road", "rd", "drive", "dr",
    "lane", "ln", "boulevard", "blvd", "court", "ct", "circle", "cir",
    "way", "place", "pl", "parkway", "pkwy", "highway", "hwy",
    "suite", "apt", "apartment", "unit", "floor", "building",
})

STREET_SUFFIXES = frozenset({
    "street", "st", "avenue", "ave", "road", "rd", "drive", "dr",
    "lane", "ln", "boulevard", "blvd", "court", "ct", "circle", "cir",
    "way", "place", "pl", "parkway", "pkwy", "highway", "hwy",
    "terrace", "ter", "trail", "trl", "square", "sq",
})

TIME_OF_DAY_WORDS = frozenset({
    "morning", "afternoon", "evening", "night", "noon", "midday", "tonight",
    "am", "pm", "a.m.", "p.m.", "anytime", "weekend", "weekday",
})

URGENCY_PHRASES = (
    "asap", "as soon as possible", "right away", "immediately", "soonest",
    "earliest", "first available", "next available", "emergency", "urgent",
    "soon", "now", "whenever",
)

WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

RELATIVE_DAYS = ("today", "tomorrow", "tonight", "next week", "this week")

MONTHS = (
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
    "jan", "feb", "mar", "apr", "jun", "jul", "aug", "sep", "sept", "oct", "nov", "dec",
)

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "florida": "FL", "georgia": "GA",
    "hawaii": "HI", "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT",
    "virginia": "VA", "washington": "WA", "west virginia": "WV", "wisconsin": "WI",
    "wyoming": "WY", "district of columbia": "DC",
}

# Names that are routinely misheard for one another. First match wins.
SIMILAR_NAME_GROUPS = (
    ("mark", "marc", "marcus"),
    ("john", "jon", "jonathan", "jonathon"),
    ("steven", "stephen", "steve"),
    ("michael", "micheal", "mike"),
    ("brian", "bryan", "bryon"),
    ("eric", "erik", "erick"),
    ("jason", "jayson"),
    ("jeffrey", "geoffrey", "geoff", "jeff"),
    ("kris", "chris", "kristopher", "christopher"),
    ("shawn", "sean", "shaun"),
    ("alan", "allan", "allen"),
    ("anne", "ann", "anna"),
    ("cathy", "kathy", "catherine", "katherine"),
    ("sara", "sarah"),
    ("lindsey", "lindsay"),
    ("tracy", "tracey"),
    ("brittany", "britney", "brittney"),
    ("ashley", "ashlee", "ashleigh"),
    ("megan", "meghan", "meagan"),
    ("rachel", "rachael"),
    ("nicole", "nichole"),
    ("teresa", "theresa"),
    ("carl", "karl"),
    ("gary", "garry"),
    ("jerry", "gerry"),
    ("phil", "phillip", "philip"),
    ("tony", "toni", "anthony"),
)

NO_UNIT_ANSWERS = frozenset({
    "no", "nope", "none", "house", "a house", "it's a house", "single family",
    "no unit", "not an apartment", "n/a", "na", "nothing",
})
