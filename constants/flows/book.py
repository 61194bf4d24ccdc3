# BOOK flow defaults. Tenant configuration always wins; these are only used when a
# host explicitly asks for the default flow (see constants.flow_defs).
DEFAULT_STEP_PROMPTS = {
    "name": {
        "prompt": "May I have your name, please?",
        "reprompt": "I didn't quite catch that. Could you tell me your name?",
    },
    "phone": {
        "prompt": "And what's the best phone number to reach you?",
        "reprompt": "I'm sorry, I didn't get that number. Can you repeat your phone number?",
    },
    "address": {
        "prompt": "What is the service address?",
        "reprompt": "I want to make sure I have the right address. Can you say it one more time?",
    },
    "property_type": {
        "prompt": "Is this a house, apartment, condo, or business location?",
        "reprompt": "Just to clarify, is this a residential home, an apartment, or a commercial location?",
    },
    "unit": {
        "prompt": "What's the apartment or unit number?",
        "reprompt": "I didn't catch the unit number. Could you repeat that?",
    },
    "gate_access": {
        "prompt": "Is there a gate or secured entry to get to your location?",
        "reprompt": "Does the technician need a gate code to get in? Yes or no?",
    },
    "gate_code": {
        "prompt": "What's the gate code?",
        "reprompt": "I didn't catch that. What's the gate code the technician should use?",
    },
    "time": {
        "prompt": "When would work best for you?",
        "reprompt": "What day or time works best for your schedule?",
    },
    "email": {
        "prompt": "What's your email address?",
        "reprompt": "Can you spell out your email address for me?",
    },
}

BOOK_STEPS = [
    {"id": "name", "field_key": "name", "type": "name", "label": "Name", "order": 1,
     "validation": {"min_length": 2}},
    {"id": "phone", "field_key": "phone", "type": "phone", "label": "Phone", "order": 2,
     "validation": {"min_digits": 10}},
    {"id": "address", "field_key": "address", "type": "address", "label": "Address", "order": 3},
    {"id": "property_type", "field_key": "property_type", "type": "select", "label": "Property Type", "order": 4,
     "options": {"choices": ["house", "apartment", "condo", "townhouse", "commercial", "mobile home", "other"]},
     "condition": {"state_key": "address_validation.needs_unit", "equals": True}},
    {"id": "unit", "field_key": "unit", "type": "text", "label": "Unit Number", "order": 5,
     "condition": {"state_key": "address_needs_unit", "equals": True}},
    {"id": "gate_access", "field_key": "gate_access", "type": "yesno", "label": "Gated Entry", "order": 6,
     "condition": {"state_key": "collected.property_type", "in": ["apartment", "condo", "townhouse", "commercial"]}},
    {"id": "gate_code", "field_key": "gate_code", "type": "text", "label": "Gate Code", "order": 7,
     "condition": {"state_key": "collected.gate_access", "equals": "yes"}},
    {"id": "time", "field_key": "time", "type": "time", "label": "Preferred Time", "order": 10},
]

BOOK_TEMPLATES = {
    "confirmation": "Let me confirm: I have {name} at {phone}, service address {address}, {time}. Is that correct?",
    "completion": "Your appointment has been scheduled. Is there anything else I can help you with?",
}
