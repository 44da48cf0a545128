"""
Access Applications Constants

Agreement names and the country lookup list used by the section validators.
"""

TERMS_AGREEMENT_NAME = "introduction_agree_to_terms"

IT_AGREEMENT_SOFTWARE_UPDATES = "it_agreement_software_updates"
IT_AGREEMENT_PROTECT_DATA = "it_agreement_protect_data"
IT_AGREEMENT_MONITOR_ACCESS = "it_agreement_monitor_access"
IT_AGREEMENT_DESTROY_COPIES = "it_agreement_destroy_copies"
IT_AGREEMENT_ONBOARD_TRAINING = "it_agreement_onboard_training"
IT_AGREEMENT_PROVIDE_INSTITUTIONAL_POLICIES = "it_agreement_provide_institutional_policies"
IT_AGREEMENT_CONTACT_FRAUD = "it_agreement_contact_fraud"
DAA_CORRECT_APPLICATION_CONTENT = "daa_correct_application_content"
DAA_AGREE_TO_TERMS = "daa_agree_to_terms"

DATA_ACCESS_AGREEMENTS: tuple[str, ...] = (
    IT_AGREEMENT_SOFTWARE_UPDATES,
    IT_AGREEMENT_PROTECT_DATA,
    IT_AGREEMENT_MONITOR_ACCESS,
    IT_AGREEMENT_DESTROY_COPIES,
    IT_AGREEMENT_ONBOARD_TRAINING,
    IT_AGREEMENT_PROVIDE_INSTITUTIONAL_POLICIES,
    IT_AGREEMENT_CONTACT_FRAUD,
    DAA_CORRECT_APPLICATION_CONTENT,
    DAA_AGREE_TO_TERMS,
)

APPENDIX_GOALS_POLICIES = "appendix_goals_policies"
APPENDIX_DATA_ACCESS_POLICY = "appendix_data_access_policy"
APPENDIX_IP_POLICY = "appendix_ip_policy"

APPENDIX_AGREEMENTS: tuple[str, ...] = (
    APPENDIX_GOALS_POLICIES,
    APPENDIX_DATA_ACCESS_POLICY,
    APPENDIX_IP_POLICY,
)

# Free-text limits for the project information section
MAX_WORDS_PER_FIELD = 200
MIN_SUMMARY_WORDS = 100
MIN_PUBLICATIONS = 3

COUNTRIES: tuple[str, ...] = (
    "Afghanistan",
    "Albania",
    "Algeria",
    "Andorra",
    "Angola",
    "Antigua and Barbuda",
    "Argentina",
    "Armenia",
    "Australia",
    "Austria",
    "Azerbaijan",
    "Bahamas",
    "Bahrain",
    "Bangladesh",
    "Barbados",
    "Belarus",
    "Belgium",
    "Belize",
    "Benin",
    "Bhutan",
    "Bolivia",
    "Bosnia and Herzegovina",
    "Botswana",
    "Brazil",
    "Brunei",
    "Bulgaria",
    "Burkina Faso",
    "Burundi",
    "Cabo Verde",
    "Cambodia",
    "Cameroon",
    "Canada",
    "Central African Republic",
    "Chad",
    "Chile",
    "China",
    "Colombia",
    "Comoros",
    "Congo",
    "Costa Rica",
    "Côte d'Ivoire",
    "Croatia",
    "Cuba",
    "Cyprus",
    "Czechia",
    "Democratic Republic of the Congo",
    "Denmark",
    "Djibouti",
    "Dominica",
    "Dominican Republic",
    "Ecuador",
    "Egypt",
    "El Salvador",
    "Equatorial Guinea",
    "Eritrea",
    "Estonia",
    "Eswatini",
    "Ethiopia",
    "Fiji",
    "Finland",
    "France",
    "Gabon",
    "Gambia",
    "Georgia",
    "Germany",
    "Ghana",
    "Greece",
    "Grenada",
    "Guatemala",
    "Guinea",
    "Guinea-Bissau",
    "Guyana",
    "Haiti",
    "Honduras",
    "Hong Kong",
    "Hungary",
    "Iceland",
    "India",
    "Indonesia",
    "Iran",
    "Iraq",
    "Ireland",
    "Israel",
    "Italy",
    "Jamaica",
    "Japan",
    "Jordan",
    "Kazakhstan",
    "Kenya",
    "Kiribati",
    "Kuwait",
    "Kyrgyzstan",
    "Laos",
    "Latvia",
    "Lebanon",
    "Lesotho",
    "Liberia",
    "Libya",
    "Liechtenstein",
    "Lithuania",
    "Luxembourg",
    "Madagascar",
    "Malawi",
    "Malaysia",
    "Maldives",
    "Mali",
    "Malta",
    "Marshall Islands",
    "Mauritania",
    "Mauritius",
    "Mexico",
    "Micronesia",
    "Moldova",
    "Monaco",
    "Mongolia",
    "Montenegro",
    "Morocco",
    "Mozambique",
    "Myanmar",
    "Namibia",
    "Nauru",
    "Nepal",
    "Netherlands",
    "New Zealand",
    "Nicaragua",
    "Niger",
    "Nigeria",
    "North Korea",
    "North Macedonia",
    "Norway",
    "Oman",
    "Pakistan",
    "Palau",
    "Palestine",
    "Panama",
    "Papua New Guinea",
    "Paraguay",
    "Peru",
    "Philippines",
    "Poland",
    "Portugal",
    "Qatar",
    "Romania",
    "Russia",
    "Rwanda",
    "Saint Kitts and Nevis",
    "Saint Lucia",
    "Saint Vincent and the Grenadines",
    "Samoa",
    "San Marino",
    "Sao Tome and Principe",
    "Saudi Arabia",
    "Senegal",
    "Serbia",
    "Seychelles",
    "Sierra Leone",
    "Singapore",
    "Slovakia",
    "Slovenia",
    "Solomon Islands",
    "Somalia",
    "South Africa",
    "South Korea",
    "South Sudan",
    "Spain",
    "Sri Lanka",
    "Sudan",
    "Suriname",
    "Sweden",
    "Switzerland",
    "Syria",
    "Taiwan",
    "Tajikistan",
    "Tanzania",
    "Thailand",
    "Timor-Leste",
    "Togo",
    "Tonga",
    "Trinidad and Tobago",
    "Tunisia",
    "Turkey",
    "Turkmenistan",
    "Tuvalu",
    "Uganda",
    "Ukraine",
    "United Arab Emirates",
    "United Kingdom",
    "United States",
    "Uruguay",
    "Uzbekistan",
    "Vanuatu",
    "Vatican City",
    "Venezuela",
    "Vietnam",
    "Yemen",
    "Zambia",
    "Zimbabwe",
)
