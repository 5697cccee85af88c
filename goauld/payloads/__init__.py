"""Machine-code payloads for AArch64, x86 and x86-64 that map a page and call dlopen."""